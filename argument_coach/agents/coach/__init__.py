"""
Coach Agent Module

Streams structured coaching replies for the seven-step argument builder:
- agent.py   - Gemini provider yielding cumulative reply snapshots
- prompts.py - System prompt, step material and welcome text (en, es)
- schemas.py - Untrusted candidate and authoritative result models
"""

from argument_coach.agents.coach.agent import CoachPrompt, CoachProvider, GeminiCoachProvider

__all__ = ["CoachPrompt", "CoachProvider", "GeminiCoachProvider"]
