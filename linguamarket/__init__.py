"""LinguaMarket: billing core for a language-learning marketplace."""

__version__ = '0.1.0'
