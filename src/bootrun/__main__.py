from bootrun.cli import main

main()
