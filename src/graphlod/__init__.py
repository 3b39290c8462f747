"""GraphLOD - level-of-detail pipeline for very large node-link graphs"""
