"""
Blueprints package for the cricket tournament API
Contains modular route blueprints for different features
"""

from .admin import admin_bp
from .matches import matches_bp
from .players import players_bp
from .universities import universities_bp

__all__ = ['admin_bp', 'matches_bp', 'players_bp', 'universities_bp']
