from votifier.server.main import main

main()
