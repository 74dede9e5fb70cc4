"""Core types, configuration and crypto shared by davsync components."""
