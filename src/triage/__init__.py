"""
Triage Module
=============

Bounded Context for event-driven ticket triage.

Responsibilities:
- Analyze tickets (LLM with rule-based fallback) into priority, notes and skills
- Assign a moderator by skill match
- Notify the assignee and welcome new users by email
- Run each event as a resumable pipeline of retried steps
"""

__version__ = "1.0.0"
