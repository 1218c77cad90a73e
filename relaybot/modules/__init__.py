"""
Command modules. Each module registers its handlers with a CommandRegistry.
"""
