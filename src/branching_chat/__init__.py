"""
Branching multi-provider chat engine.

A conversation is a forest of turns: every prompt can fan out to several model
providers at once, each answer growing its own branch. The engine stores the
forest ('conversation_database'), projects paths out of it ('branching'), and
streams concurrent provider sessions into it ('orchestration').
"""

__version__ = "0.1.0"
