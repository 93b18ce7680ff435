# candymaze - navigation and two-player sync engine for the candy maze game
