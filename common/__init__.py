"""
Command Center — shared runtime services (logging, configuration, metrics).
"""
