"""
Streamlit report viewer.
"""
