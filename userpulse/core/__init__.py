"""
Core components of the UserPulse service: job storage and orchestration,
reduction (dedup and ranking), the summarizer and the pipeline coordinator.
"""
