"""Artifact generation -- response models, prompt context assembly, and the
orchestrator that turns meetings into summaries, PRDs, roadmaps, emails and
grounded answers.
"""
