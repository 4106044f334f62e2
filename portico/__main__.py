from portico.server import main

main()
