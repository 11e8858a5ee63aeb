"""
Outrank AI Visibility Engine

Measures how often AI assistants mention a business:
1. Crawls the business website and extracts structured data
2. Researches the questions customers ask AI assistants
3. Queries ChatGPT, Claude, Gemini and Perplexity with those questions
4. Scores visibility and builds a report
5. Enriches paying accounts with brand awareness, action plans and PRDs
"""

__version__ = "0.3.0"
