"""Utility helpers for Reddit Archiver"""
