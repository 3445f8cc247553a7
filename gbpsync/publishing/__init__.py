"""
Publishing of local mutations to Google.
"""

from .pipeline import PublishPipeline, build_post_body, MAX_POST_SUMMARY

__all__ = [
    "PublishPipeline",
    "build_post_body",
    "MAX_POST_SUMMARY",
]
