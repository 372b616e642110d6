"""File loading, export and synthetic data helpers"""
