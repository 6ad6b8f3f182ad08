from deep_research.cli import main

main()
