"""
__init__.py

Serial communication engine for the ERCHM30TZ diesel engine regulator.
"""
