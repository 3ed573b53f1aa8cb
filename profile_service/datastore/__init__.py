"""
Profile storage backends (SQL and PostgREST-compatible HTTP).
"""
