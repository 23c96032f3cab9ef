"""
Rendering package: vendor-neutral expression trees and the SQL dialects that
turn them, and schema operations, into dialect-specific SQL strings.
"""
