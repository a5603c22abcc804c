"""
Services for job orchestration, persistence and output storage.
"""
