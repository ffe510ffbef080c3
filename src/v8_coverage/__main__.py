from v8_coverage.cli import main

main()
