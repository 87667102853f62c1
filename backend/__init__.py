# backend/__init__.py

"""
Backend package for the travel-preparation chatbot.

Contains:
- main.py       : FastAPI app and the streaming chat relay
- chat_chain.py : preamble, checklist and completion providers (OpenAI, Gemini)
- models.py     : Turn and request payload models
- config.py     : environment-driven relay settings
"""
