from cosmos_server.cli import main

raise SystemExit(main())
