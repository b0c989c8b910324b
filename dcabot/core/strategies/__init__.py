"""
Strategy Modules

Contains the recurring purchase (DCA) engine.
"""
