from function_lab.cli import main

main()
