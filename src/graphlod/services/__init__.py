"""Graph reduction, clustering and level-of-detail services"""
