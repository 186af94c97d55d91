"""
perplexia package - Django chat application with Perplexity integration.

This is the main package for the perplexia project, a Django application that
talks to the Perplexity chat-completions API to generate Django project code.

Key features:
- Chat threads with persisted user/assistant messages
- Rotation across several Perplexity API keys when one hits its quota
- Key status endpoint and admin tooling to reactivate exhausted keys

The project uses Python 3.13 and Django 5.2.
"""
