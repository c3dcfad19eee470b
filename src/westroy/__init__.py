"""WESTROY marketplace backend."""
