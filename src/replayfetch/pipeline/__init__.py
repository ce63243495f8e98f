"""
replayfetch Pipeline - scheduled retrieval of new demos.
"""

from replayfetch.pipeline.retrieval import DemoRetrievalJob, PlayerChain, RetrievalSummary

__all__ = ["DemoRetrievalJob", "PlayerChain", "RetrievalSummary"]
