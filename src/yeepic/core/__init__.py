"""Core data model: grid hierarchy, staggered fields and collaborator interfaces."""
