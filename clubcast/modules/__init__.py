"""
Clubcast Modules
================

Flask blueprint modules for the association portal's outbound mailing.
"""

__all__ = ['email', 'mailing']
