"""
Live-match reconciliation: the conditional apply of provider state onto the
canonical `matches` row, and the once-only post-match datasets.
"""
