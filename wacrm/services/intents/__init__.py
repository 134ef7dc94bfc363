"""Chatbot intent classification."""

from wacrm.services.intents.classifier import Intent, IntentClassifier, IntentMatch, parse_intents

__all__ = ["Intent", "IntentClassifier", "IntentMatch", "parse_intents"]
