"""COBOL Simulator - compile and run fixed-format COBOL programs.

The source tree holds flat top-level packages:
    preprocessor: COPY expansion with REPLACING
    parser: fixed-column lexer and recursive-descent parser
    cobol_ast: AST nodes, debug tree and the compile_source/compile_file API
    analyzers: column and semantic validators
    runtime: interpreter with files, CICS simulation and debugger
    output: JSON reports and compiler listings

Example:
    >>> from cobol_ast import compile_source
    >>> from runtime import Runtime
    >>>
    >>> result = compile_source(source)
    >>> if result.succeeded:
    ...     print(Runtime().run(result.program).output)
"""

__version__ = "1.0.0"
