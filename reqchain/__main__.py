from reqchain.cli import main

main()
