"""
Small-business analytics backend: legacy data synchronization service.
"""
