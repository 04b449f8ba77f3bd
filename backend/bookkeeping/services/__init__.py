"""
Services driven by the lifecycle: backups, scheduling, uploads, health
"""
