from cache_relocator.cli import main

main()
