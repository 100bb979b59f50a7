from trusera_sdk.cli import main

raise SystemExit(main())
