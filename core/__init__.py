"""
core package: dispatch orchestration, the one-time credential gate, staff auth and errors.
"""
