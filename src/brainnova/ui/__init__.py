"""Streamlit presentation layer."""
