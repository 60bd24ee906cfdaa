"""
contextguard - Adaptive context compaction for long-running agents
"""

__version__ = "0.1.0"
__logo__ = "🗜️"
