"""
PRD generation skills: analyzers, section writers, merge engine and confidence model.
"""
