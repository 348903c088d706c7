"""
Core Package.

Contains the instrumentation pipeline:
- Source Loader and Declaration Index
- Type Resolver and Site Locator
- Identifier Allocator, Rewriter and Emitter
- Engine (unit boundary and batch processing)
"""
