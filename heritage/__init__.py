"""Heritage Atlas backend package.

Contains API wiring, settings, database access, hosted-backend clients and
the request pipelines.
"""
