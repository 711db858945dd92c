from .node_builder import main

main()
