"""
Utilitários compartilhados
"""
