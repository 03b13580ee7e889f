"""Static remediation guidance for every finding class.

Findings carry a ``remediation_id``; the report assembler resolves it here.
"""
