from tracker_mcp.main import main

raise SystemExit(main())
