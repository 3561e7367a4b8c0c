"""MindfulBot support-chat backend."""
